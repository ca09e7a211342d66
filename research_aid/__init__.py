"""
Equity Research Aid - screen a stock universe, build comps against an anchor,
and keep investment theses alongside saved research sets.

Quotes come from Yahoo Finance; everything the user creates lives in a
local, single-device key-value store.
"""

__version__ = "0.1.0"
