"""
Data structures of the controller: raw K8s bodies, references, credentials,
trigger specifications, label selectors.

All the functions here are purely data-manipulative and computational.
No external calls or any i/o activities are done here.
"""
