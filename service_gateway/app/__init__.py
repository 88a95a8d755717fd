"""
API Gateway Service package for the QA Showcase.

The gateway fronts two adapter backends, enforcing:
- Authentication: bearer JWT or shared service key
- Transparent reverse proxying to adapter-a / adapter-b
- Completion calls with bounded retries
- In-memory stub areas (notifications, workflows, audit, analytics, admin)

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: resolver, reverse proxy, completion client.
- app.auth: bearer token validation.
- app.domain: auth gate and in-memory stores.
"""
