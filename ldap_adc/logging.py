import logging

#: The package logger.  We never attach handlers; that is the application's job.
logger = logging.getLogger("ldap_adc")
