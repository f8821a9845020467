"""Provider execution for workflow runs."""

from .fanout_service import AsyncProviderFanout

__all__ = ["AsyncProviderFanout"]
