"""pfSense Container Controller (pfcc).

Watches Docker containers and keeps a pfSense HAProxy configuration in line
with the labels found on them:
 - label translation (native ``pfsense-controller.*`` labels, or Traefik
   labels for backend discovery in compatibility mode)
 - backend create/update and shared-frontend ACL/action merging
 - retried remote calls and an explicit apply per container
 - health, readiness and metrics endpoints for operators

Remote objects are never deleted automatically; see ``manager.remove_container``.
"""
