"""Local inter-process coordination: endpoint identity, binding, forwarding"""
