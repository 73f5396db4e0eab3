"""
Provider layer for swappable backend services.

Application code depends only on the capability interfaces; the
concrete backend is chosen at runtime from configuration.

Directory Structure:
    providers/
    ├── __init__.py            # This file
    ├── context.py             # Client / server execution contexts + guards
    ├── interface.py           # BackendProviderInterface + lifecycle states
    ├── registry.py            # BackendName -> provider class (lazy imports)
    ├── factory.py             # BackendContainer + module-level accessors
    ├── firebase_provider.py   # Firestore + Firebase Auth + Firebase Storage
    ├── supabase_provider.py   # Postgres + Supabase Auth + Supabase Storage
    ├── auth/                  # Auth interface and adapters
    ├── database/              # Database interface, capabilities and adapters
    └── storage/               # Storage interface and adapters
"""

# Lazy imports to avoid circular dependencies and vendor SDK imports:
# use app.providers.factory for the accessors.

__all__ = []
