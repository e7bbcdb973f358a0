"""Storage adapters and the collaborator contracts they satisfy.

Adapters are imported directly from their modules so handlers only pull in
the client libraries they need.
"""
