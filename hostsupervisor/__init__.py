"""
hostsupervisor - Run a host daemon that Docker containers can reach.

Installs, starts, stops and reports on a single detached ChromeDriver on the
host, published to containers as http://host.docker.internal:<port>.
"""

__version__ = "0.1.0"
