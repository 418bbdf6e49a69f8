"""Deployment guard and deploy-cycle orchestration."""
