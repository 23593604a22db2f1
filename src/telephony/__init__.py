"""Sample-level audio primitives for the telephony leg.

G.711 mu-law companding and linear-interpolation resampling; both are pure
numpy code and never touch the network.
"""
