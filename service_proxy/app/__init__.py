"""
Weather edge proxy application package.

The proxy sits between browser clients and upstream weather providers,
enforcing, in order:
- Provider resolution and parameter whitelisting
- Origin allowlist and shared proxy key
- Fixed-window per-caller rate limiting
- Shared response caching with derived Cache-Control headers

Structure:
- app.main: FastAPI app, routes, and component wiring.
- app.pipeline: The ordered request pipeline.
- app.providers: Provider registry.
- app.validation: Parameter validation and canonical cache keys.
- app.security: Origin and proxy-key checks.
- app.ratelimit: Fixed-window limiter backends.
- app.caching: Response cache backends.
- app.adapters: Outbound HTTP client for providers.
"""
