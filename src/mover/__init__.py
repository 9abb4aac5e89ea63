"""Command line for moving data to and from the workload volume claims."""
