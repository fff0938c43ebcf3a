"""OPD desk application.

Models, serializers, services, views and route registrations for the
outpatient front desk, consulting rooms and department worklists.
"""
