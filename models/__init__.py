"""Poll aggregation, Bayesian updating and electoral simulation."""
