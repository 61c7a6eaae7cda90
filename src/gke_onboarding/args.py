import argparse
import os
from typing import Any, Sequence

import yaml

from gke_onboarding.context import Context, DEFAULT_NAMESPACE
from gke_onboarding.util import Logger, UserError


class ArgumentParser(argparse.ArgumentParser):
    """Reports usage errors as a UserError, so they fail like every other error."""

    def error(self, message):
        raise UserError(f"{self.prog}: {message} (use '--help' for usage)")


def typed_value(value: str) -> Any:
    """Numbers and booleans given on the command line keep their YAML type, anything else stays a string."""
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    return parsed if isinstance(parsed, (bool, int, float)) else value


class VariableAction(argparse.Action):

    def __init__(self, option_strings, dest, context: Context = None, nargs=None, const=None, default=None, type=None,
                 choices=None, required=False, help=None, metavar=None):
        if const is not None:
            raise ValueError("internal error: 'const' not allowed with VariableAction")
        if type is not None and type != str:
            raise ValueError("internal error: 'type' must be 'str' (or None)")
        super().__init__(option_strings, dest, nargs, const, default, type, choices, required, help, metavar)
        self._context: Context = context

    def __call__(self, parser, namespace, values, option_string=None):
        tokens = values.split('=', 1)
        if len(tokens) != 2:
            raise UserError(f"bad variable declaration: '{values}' (expected NAME=VALUE)")
        else:
            var_name = tokens[0]
            var_value = tokens[1]
            if len(var_value) >= 2 and var_value[0] == '"' and var_value[-1] == '"':
                var_value = var_value[1:-1]
            else:
                var_value = typed_value(var_value)
            self._context.add_variable(var_name, var_value)


class VariablesFileAction(argparse.Action):

    def __init__(self, option_strings, dest, context: Context = None, nargs=None, const=None, default=None, type=None,
                 choices=None, required=False, help=None, metavar=None):
        if const is not None:
            raise ValueError("internal error: 'const' not allowed with VariablesFileAction")
        if type is not None and type != str:
            raise ValueError("internal error: 'type' must be 'str' (or None)")
        super().__init__(option_strings, dest, nargs, const, default, type, choices, required, help, metavar)
        self._context: Context = context

    def __call__(self, parser, namespace, values, option_string=None):
        if os.path.exists(values):
            self._context.add_file(values)
        else:
            with Logger(indent_amount=0, spacious=False) as logger:
                logger.warn(f"Variables file '{values}' is missing!")


def parse_arguments(context: Context, args: Sequence[str] = None) -> argparse.Namespace:
    """Parses the command line into the given context.

    Unknown flags and stray positional arguments are ignored. A namespace flag given without a value leaves the
    namespace at its default."""
    argparser = ArgumentParser(
        prog='gke-onboarding',
        description=f"Creates a '{context.account_name}' service account with cluster-admin permissions on the current "
                    f"GKE cluster and uploads its credentials to Vault for Spinnaker dynamic accounts "
                    f"(v{context.version}).",
        epilog=f'"{DEFAULT_NAMESPACE}" namespace will be used if no arguments given',
        allow_abbrev=False)
    argparser.add_argument('-n', '--namespace', dest='namespace', nargs='?', const=None, default=None, metavar='NAME',
                           help='namespace to create the service account in')
    argparser.add_argument('--var', action=VariableAction, context=context, metavar='NAME=VALUE', dest='context',
                           help='sets the given context variable')
    argparser.add_argument('--var-file', action=VariablesFileAction, context=context, metavar='FILE', dest='context',
                           help='loads context variables from the given YAML file')
    argparser.add_argument('--kubeconfig-out', dest='kubeconfig_out', nargs='?', const='', default=None,
                           metavar='PATH', help="also write a kubeconfig for the new account (default: "
                                                "'<cluster-id>.config' in the workspace directory)")
    argparser.add_argument('-v', '--verbose', action='store_true', dest='verbose', help="increase verbosity")
    parsed, unknown = argparser.parse_known_args(args=args)

    if parsed.namespace:
        context.namespace = parsed.namespace
    if parsed.verbose:
        context.verbose = True
    if parsed.kubeconfig_out is not None:
        context.kubeconfig_out = parsed.kubeconfig_out
    if unknown and context.verbose:
        with Logger(indent_amount=0, spacious=False) as logger:
            logger.warn(f"Ignoring unknown arguments: {' '.join(unknown)}")
    return parsed
