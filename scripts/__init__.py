"""Provisioning scripts for MAHORAGA Cloudflare Access."""
