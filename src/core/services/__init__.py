# SitePulse domain services: pure helpers shared by components
# (bot filtering, path globbing, visitor hashing)
