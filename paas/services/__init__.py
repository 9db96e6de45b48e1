# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - auth.py: JWT tokens, bcrypt passwords, API key hashing
#   - tenancy.py: tenant resolution and schema provisioning
#   - tenants.py, accounts.py, provisioning.py: tenants, users, signup
#   - licensing.py: licenses, seats, entitlements, access checks
#   - rate_limiter.py: Redis sliding-window rate limits
#   - llm.py: Multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - ai_agent.py, template_variables.py: TQ template filling and chat
#   - quotes.py, numbering.py: TQ quote pricing and document numbers
# =============================================================================
