"""Worldstate bot package.

This package mirrors live Warframe world-state into Discord channels. Three
feeds (void fissures, Baro Ki'Teer, arbitrations) share one engine: poll the
upstream document, classify its entries, decide whether the change is worth
surfacing, and reconcile every subscribed channel's message in place.
"""

__all__: list[str] = []
