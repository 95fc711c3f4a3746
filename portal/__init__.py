"""
Client Analytics Portal Package

This package contains the portal's application modules:
- api: FastAPI routes, dependencies and schemas
- auth: Authentication and identity
- core: Role resolution, aggregation, live refresh and session control
- db: Database client, query descriptions and models
- services: Administrative operations
- tests: Test suites
"""
