# -*- coding: utf-8 -*-
"""
densesteg command line interface

Usage:
    densesteg encode cover.png stego.png "secret message"
    densesteg decode stego.png
    densesteg export checkpoint.pt ./pretrained
    densesteg inspect --weights ./pretrained
    densesteg audit-bn --weights ./pretrained --network decoder
"""

import argparse
import logging
import os
import sys

import torch

from densesteg.config import VERSION, WEIGHT_FILES, get_config
from densesteg.models import SteganoGAN
from densesteg.numerics import audit_batch_norm
from densesteg.utils import PayloadError
from densesteg.weights import WeightsError, export_checkpoint, read_tensors, state_dict_tree

logger = logging.getLogger('densesteg')


def _load_model(args):
    config = get_config(weights_dir=args.weights, cuda=not args.cpu, verbose=args.verbose)
    return SteganoGAN.from_weights(
        config['weights_dir'],
        data_depth=args.data_depth,
        hidden_size=args.hidden_size,
        cuda=config['cuda'],
        verbose=config['verbose'],
    )


def _encode(args):
    model = _load_model(args)
    model.encode(args.cover, args.output, args.message)
    print(args.output)


def _decode(args):
    model = _load_model(args)
    print(model.decode(args.image))


def _export(args):
    written = export_checkpoint(args.checkpoint, args.output_dir, trusted=args.trusted)
    for name, path in written.items():
        print(f'{name}: {path}')


def _inspect(args):
    weights_dir = get_config(weights_dir=args.weights)['weights_dir']
    for name, filename in WEIGHT_FILES.items():
        path = os.path.join(weights_dir, filename)
        if not os.path.exists(path):
            logger.warning('%s: %s not found', name, path)
            continue
        print(f'== {name} ({path})')
        print(state_dict_tree(read_tensors(path)))


def _audit_input(args, model, network):
    if args.image:
        image = model.load_image(args.image)
    else:
        image = torch.full((1, 3, args.size, args.size), args.fill, device=model.device)

    if network == 'encoder':
        _, _, width, height = image.size()
        data = torch.full((1, model.data_depth, width, height), 0.5, device=model.device)
        return image, data
    return (image,)


def _audit_bn(args):
    model = _load_model(args)
    failures = 0
    networks = [args.network] if args.network != 'all' else list(WEIGHT_FILES)

    for name in networks:
        if name == 'critic' and not model.has_critic:
            logger.warning('skipping critic, no weights loaded')
            continue
        network = model.networks[name]
        network.train(args.train_mode)
        try:
            reports = audit_batch_norm(network, *_audit_input(args, model, name), atol=args.atol)
        finally:
            network.eval()

        print(f'== {name}')
        for report in reports:
            print(f'  {report}')
        failures += sum(not report.ok for report in reports)

    return 1 if failures else 0


def _add_model_args(parser):
    parser.add_argument('--weights', type=str, default=None,
                        help='weights directory (default: $DENSESTEG_WEIGHTS_DIR or ./pretrained)')
    parser.add_argument('--data_depth', type=int, default=None,
                        help='payload bits per pixel (inferred from the weights)')
    parser.add_argument('--hidden_size', type=int, default=None,
                        help='hidden channels (inferred from the weights)')
    parser.add_argument('--cpu', action='store_true', help='force CPU')


def get_parser():
    parser = argparse.ArgumentParser(
        prog='densesteg',
        description='SteganoGAN dense-variant inference on safetensors weights',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {VERSION}')
    parser.add_argument('-v', '--verbose', action='store_true', help='verbose logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    encode = subparsers.add_parser('encode', help='hide a message in an image')
    _add_model_args(encode)
    encode.add_argument('cover', help='cover image')
    encode.add_argument('output', help='output PNG path')
    encode.add_argument('message', help='message to hide')
    encode.set_defaults(func=_encode)

    decode = subparsers.add_parser('decode', help='recover a message from an image')
    _add_model_args(decode)
    decode.add_argument('image', help='steganographic image')
    decode.set_defaults(func=_decode)

    export = subparsers.add_parser('export', help='re-export a torch checkpoint to safetensors')
    export.add_argument('checkpoint', help='checkpoint holding encoder/decoder/critic state dicts')
    export.add_argument('output_dir', help='weights directory to write')
    export.add_argument('--trusted', action='store_true',
                        help='allow unpickling model objects (only for checkpoints you trust)')
    export.set_defaults(func=_export)

    inspect_parser = subparsers.add_parser('inspect', help='print tensor names and shapes')
    inspect_parser.add_argument('--weights', type=str, default=None, help='weights directory')
    inspect_parser.set_defaults(func=_inspect)

    audit = subparsers.add_parser('audit-bn', help='check batch norm layers against the closed form')
    _add_model_args(audit)
    audit.add_argument('--network', choices=['encoder', 'decoder', 'critic', 'all'], default='all')
    audit.add_argument('--image', type=str, default=None, help='input image (default: constant image)')
    audit.add_argument('--size', type=int, default=127, help='constant image size')
    audit.add_argument('--fill', type=float, default=1.0, help='constant image value')
    audit.add_argument('--atol', type=float, default=1e-4, help='allowed absolute deviation')
    audit.add_argument('--train-mode', dest='train_mode', action='store_true',
                       help='audit with batch statistics instead of running statistics')
    audit.set_defaults(func=_audit_bn)

    return parser


def main(argv=None):
    parser = get_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        return args.func(args) or 0
    except (OSError, WeightsError, PayloadError, ValueError) as e:
        logger.error('%s', e)
        return 1


if __name__ == '__main__':
    sys.exit(main())
