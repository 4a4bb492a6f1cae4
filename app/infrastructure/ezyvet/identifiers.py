"""External system names and ezyVet resource paths.

The system name is the key stored in ``vms_identifiers.system_name``; it must
stay stable once records have been linked.
"""

EZYVET_SYSTEM = "ezyVet"

AUTH_PATH = "/oauth/access_token"
CONTACT_RESOURCE = "contact"

# Filters of the initial owner import
CUSTOMER_FILTERS = {"is_customer": "1"}
