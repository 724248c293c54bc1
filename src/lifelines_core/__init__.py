"""
Lifelines Core - lifecycle and synchronization core for reconstruction projects

Officials, contractors and residents move a damaged site from assessment to a
licensed rebuild: damage reports, versioned plans, competitive bids, awards,
construction licenses and a shared inventory of salvaged materials. Field
clients keep working offline and replay their writes when the link returns.

Fun fact: after the 1906 San Francisco earthquake, salvaged bricks from the
ruins were cleaned by hand and laid again in the rebuilt city.
"""

from lifelines_core.lifelines import Lifelines

__version__ = "0.1.0"
__all__ = ["Lifelines", "__version__"]
