"""
CLI entry point, when used as a module: `python -m kubevent`.

Useful for debugging in the IDEs (use the start-mode "Module", module "kubevent").
"""
from kubevent import cli

if __name__ == '__main__':
    cli.main()
