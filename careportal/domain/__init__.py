"""Domain packages - one per bounded area (router, service, repository, schemas)"""
