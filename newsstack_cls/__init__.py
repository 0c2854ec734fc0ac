"""newsstack_cls – in-memory telegraph feed for the CLS (财联社) site.

Renders the telegraph page through a browser page driver, extracts
bulletins with an ordered chain of fallback strategies, dedupes and
merges them into a bounded in-memory store, and refreshes that store on
a timer from a daemon thread.  New bulletins are handed to a callback
on each refresh cycle.

Entry points: ``NewsService`` (facade) and ``python -m newsstack_cls.run``.
"""
