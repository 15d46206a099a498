"""changestream-rows test suite.

Test organization:
- test_values.py / test_extjson.py: dynamic values and Extended JSON decoding
- test_schema.py: logical types, type declarations, table schemas
- test_converters.py: scalar and composite conversion rules
- test_events.py / test_dispatcher.py: change events and row emission
- test_sink.py / test_processor.py: outputs and the error-tolerance runtime
- test_options.py / test_config_loader.py / test_env.py: configuration
- test_errors.py / test_logging.py / test_cli.py: ambient stack
"""
