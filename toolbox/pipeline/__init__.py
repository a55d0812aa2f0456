"""
Ephemeral Artifact Pipeline

validate -> materialize inputs -> dispatch transform -> materialize output
-> resolve URL, with every touched file scheduled for reclamation.
"""
