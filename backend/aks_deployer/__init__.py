"""
Build, push and deploy a Node.js application to Azure Kubernetes Service.
"""

__version__ = "1.0.0"
