"""
Component modules for the bundle entrypoint.

Each module describes one application image and registers itself with the
ComponentRegistry when imported.
"""

from bundles.components import (  # noqa: F401
    bluesky_pds,
    gibbon,
    limesurvey,
    moodle,
    odoo,
    suitecrm,
)
