"""Authentication and authorization.

Learn: Identity arrives as a bearer JWT minted by the account service.
It is resolved once per request into a typed Identity (user id + role)
that handlers receive explicitly through FastAPI dependencies — there is
no untyped per-request storage to read back.
"""
