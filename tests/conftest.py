import os

# Plots are rendered off-screen during tests.
os.environ.setdefault('MPLBACKEND', 'Agg')
