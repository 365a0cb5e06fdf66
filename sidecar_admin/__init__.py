"""
Sidecar Admin module.

Operator CLI (``sidecar-admin``) for dry-run inspection of the pods the
sidecar controller manages.
"""
