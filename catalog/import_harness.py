"""
Import harness: loads every catalog module without a database.
"""

import catalog.models  # noqa: F401
import catalog.services.scan  # noqa: F401
import catalog.services.tools  # noqa: F401
import catalog.services.app_info  # noqa: F401
