"""
Authentication package for the Market Appliance client.

This package contains the token file storage and the token manager that
keeps the appliance credentials fresh and decorates outgoing requests.
"""
