"""
Shared module for common utilities used by the REST API.

STRUCTURE:
- shared.security: Authentication and authorization
  - auth.py: JWT verification, current_user_context, require_roles
  - password.py: Bcrypt hashing
  - rate_limit.py: slowapi limiter

- shared.infrastructure: Database and messaging
  - db.py: SQLAlchemy sessions, safe_commit()
  - correlation.py: X-Request-ID middleware and log filter
  - events/: Redis pub/sub, event publishing

- shared.config: Configuration
  - settings.py: Environment config (Pydantic)
  - logging.py: Structured logging
  - constants.py: Roles, status values, transition tables

- shared.utils: Utilities
  - exceptions.py: HTTP exceptions with error kinds and auto-logging
  - validators.py: Input validation
  - schemas.py: Response envelope and auth schemas

IMPORT EXAMPLES:
    from shared.security.auth import verify_jwt, current_user_context
    from shared.infrastructure.db import get_db, safe_commit
    from shared.config.settings import settings
    from shared.config.constants import Roles, CampDayStatus
    from shared.utils.exceptions import NotFoundError, ForbiddenError
"""
