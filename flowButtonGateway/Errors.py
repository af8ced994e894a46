''' Errors raised by flowButtonGateway '''


class FlowGatewayError(Exception):
    ''' Base error for flowButtonGateway '''


class ConfigError(FlowGatewayError):
    ''' Raised when registration data is present but incomplete '''
