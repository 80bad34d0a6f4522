"""
Extension fetch proxy service package.

The service takes a Chrome extension identifier and returns either the
signed CRX container exactly as the update service sent it, or the ZIP
archive embedded inside it. It enforces:
- Identifier validation before any other work
- Per-caller fixed-window rate limiting
- A wall-clock deadline and a byte ceiling on every upstream fetch

Structure:
- app.main: FastAPI app, routes, and lifespan wiring.
- app.adapters: HTTP client for the update service and the size guard.
- app.ratelimit: Fixed-window limiter, its store and the expiry sweep.
- app.domain: Identifiers, container parsing, response headers and the
  request pipeline shared by both delivery modes.
"""
