"""
Completion gateway for the Astro Insights web client.

The gateway proxies chat completions to Together AI with Claude as fallback,
retrying transient failures, repairing truncated readings with a single
reprompt, and fronts the Prokerala astrology data API behind a cached OAuth
token and a fixed-window rate limit.

Structure:
- app.main: FastAPI app, routes and service wiring.
- app.adapters: HTTP clients for completion providers, Prokerala and geocoding.
- app.auth: OAuth token cache for the data provider.
- app.ratelimit: Fixed-window limiter for data provider calls.
- app.prompts: Prompt normalization, birth detail extraction, reprompts.
- app.domain: Models, truncation heuristics, provider routing, chat pipeline.
"""
