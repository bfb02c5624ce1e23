"""
Business logic services package.

WHY: Services contain business logic separated from API routes and stores,
following the three-layer architecture (API → Service → Store/DAO).
"""
