"""
AITI Agent Chat Package

This package contains the webhook chat core shared by the web and native clients:
- auth: Authenticated user, agent profiles and token encryption
- core: Conversation reconciliation against the backing store
- db: Supabase backing store, settings and integration secrets
- services: Webhook payload builder, dispatcher, response normaliser, audio storage
- api: FastAPI JSON surface
- tests: Test suites
"""
