"""
Provision Windows services declaratively through NSSM, the Non-Sucking Service Manager.
"""
