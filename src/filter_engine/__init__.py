# This package contains the cross-filtering engine behind the ombudsman dashboard pages.
# It exists so chart clicks and dropdown controls resolve to one effective filter set per page.
# The modules separate filter values, merging, loading, and fan-out so each can be tested on its own.

__all__ = ["engine"]
