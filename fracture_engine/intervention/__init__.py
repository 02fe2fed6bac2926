from .dispatcher import (
    ActionBundle, ActionBundleTable, InterventionDispatcher, ActionExecutor, default_bundles,
)

__all__ = ['ActionBundle', 'ActionBundleTable', 'InterventionDispatcher', 'ActionExecutor',
           'default_bundles']
