"""auth/ -- Authentication and authorization package for PeopleHub.

Layer rule: auth/ imports from core/ plus stdlib and third-party libraries.
It does NOT import from api/ or hr/.
api/ and hr/ import from auth/, not the other way around.
"""
