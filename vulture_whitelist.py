# Vulture whitelist file
# This file contains false positives that vulture incorrectly flags as dead code.
# These are typically framework-registered functions, Pydantic fields, pytest fixtures, etc.
#
# Usage: python3 -m vulture vsphere_janitor vulture_whitelist.py

# =============================================================================
# FastAPI Route Handlers (registered via @router.get/post decorators)
# =============================================================================
# These functions are called by FastAPI when matching HTTP requests arrive.
# Vulture cannot see this because the registration happens via decorators.

health_check  # routes.py - GET /healthz
readiness_check  # routes.py - GET /readyz
get_janitor_status  # routes.py - GET /api/v1/status
get_metrics  # routes.py - GET /api/v1/metrics
trigger_cleanup  # routes.py - POST /api/v1/cleanup

# =============================================================================
# FastAPI lifespan (registered via FastAPI(lifespan=...))
# =============================================================================
lifespan  # main.py - starts the metrics reporter and janitor loop

# =============================================================================
# Pydantic Model Fields (accessed via JSON serialization/deserialization)
# =============================================================================
_.finished_at  # PathRunStatus model field
_.listing_error  # PathRunStatus model field
_.tracked_zero_uptime_vms  # JanitorStatusResponse model field
_.meters  # MetricsResponse model field

# =============================================================================
# Pydantic Config class attributes
# =============================================================================
Config  # config.py - Pydantic settings class
_.env_file  # Pydantic settings configuration
_.case_sensitive  # Pydantic settings configuration

# =============================================================================
# Enum Values (reported through the API or reserved for callers)
# =============================================================================
_.POWER_OFF  # VMAction enum value
_.POWER_OFF_AND_DESTROY  # VMAction enum value

# =============================================================================
# pytest fixtures (resolved by name)
# =============================================================================
anyio_backend  # conftest.py - selects the asyncio backend for anyio tests
reset_config_validation_cache  # conftest.py - autouse fixture
