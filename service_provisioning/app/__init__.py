"""
Provisioning Service package.

The provisioning service binds verified identities to management-plane
accounts, enforcing:
- Ownership: subscriptions are visible only to their owner or to admins
- Role policy: non-admins may change only part of a service record
- Onboarding: first subscriptions come with a sandbox identity and service

Structure:
- app.main: FastAPI app, routes, and wiring.
- app.operations: Operations exposed to the HTTP layer.
- app.adapters: HTTP clients for the management plane and notification API.
- app.identity: Account resolution and admin detection.
- app.subscriptions: Subscription creation, group assignment, key rotation.
- app.policy: Service update policy and service models.
- app.onboarding: First-subscription workflow.
- app.caching: Lookup caches.
"""
