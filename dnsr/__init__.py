"""DNS Reconciler (DNSR).

Keeps the A records of one shared hostname in line with backend health:
 - health probes by address, presenting the virtual hostname
 - edge-triggered health state with a removal grace period
 - planned assign/unassign actions that never empty the record set
 - a rate-limited, retrying Cloudflare client
"""
