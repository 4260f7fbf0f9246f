"""
Version of the Azure DevOps Write-Back Agent.
"""
__version__ = "1.0.0"
