import matplotlib

# Headless plotting for every test module
matplotlib.use("Agg")
