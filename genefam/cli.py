#! /usr/bin/env python

import genefam.error_estimation as ee
import genefam.error_model as em
from genefam.birthdeath import reset_birthdeath_cache
from genefam.family import FamilyTable, SanityFlag, sync_sanity_check
from genefam.inference import conditional_distribution, family_pvalue
from genefam.likelihood import compute_tree_likelihoods
from genefam.tree import FamilyTree
from genefam.utils import FamilySizeRange

import argparse
import numpy as np
import warnings
import os
import sys


def _estimate(args, log):
    kwargs = dict(
        symmetric=args.symmetric,
        max_diff=args.max_diff,
        peak_zero=args.peak_zero,
        max_family_size=args.max_family_size,
        max_runs=args.max_runs,
        rng=np.random.default_rng(args.seed),
        log=log,
    )
    if args.truth is not None:
        return ee.estimate_error_true_measure(args.measure1, args.truth, **kwargs)
    return ee.estimate_error_double_measure(args.measure1, args.measure2, **kwargs)


def errest(args):
    """error model estimation subprogram."""
    if args.log is not None:
        with open(args.log, "w") as log:
            measure = _estimate(args, log)
    else:
        measure = _estimate(args, sys.stdout)
    model = measure.error_model()
    if args.outfile is not None:
        model.errorfilename = args.outfile
        with open(args.outfile, "w") as f:
            model.write(f)
    else:
        model.write()


def likelihood(args):
    """family likelihood subprogram."""
    table = FamilyTable.read(args.families, command="likelihood")
    if os.path.isfile(args.tree):
        with open(args.tree) as f:
            newick = f.read().strip()
    else:
        newick = args.tree
    family_size = FamilySizeRange.from_max_size(table.max_size())
    tree = FamilyTree(newick, family_size, lambda_=args.lambda_, mu=args.mu)
    table.set_species_index(tree)
    if sync_sanity_check(table, tree) & SanityFlag.NOT_SYNCHRONIZED:
        missing = [s for s, i in zip(table.species, table.index) if i is None]
        warnings.warn(f"species not found in the tree: {', '.join(missing)}")
    if args.errormodel is not None:
        for species in args.species or [None]:
            em.set_error_matrix_from_file(
                table, tree, family_size, args.errormodel, species
            )
    reset_birthdeath_cache(tree)

    header = "Family ID\tML root size\tlikelihood"
    if args.pvalues > 0:
        distribution = conditional_distribution(
            tree, args.pvalues, np.random.default_rng(args.seed)
        )
        header += "\tp-value"
    print(header)
    root_sizes = np.arange(family_size.root_min, family_size.root_max + 1)
    for item in table:
        table.set_size(item, tree)
        root_likelihoods = compute_tree_likelihoods(tree)[root_sizes]
        best = np.argmax(root_likelihoods)
        row = f"{item.id}\t{root_sizes[best]}\t{root_likelihoods[best]:g}"
        if args.pvalues > 0:
            row += f"\t{family_pvalue(tree, distribution):g}"
        print(row)


def get_parser():
    parser = argparse.ArgumentParser(
        description="gene family size evolution under a birth-death process with "
        "measurement error"
    )
    subparsers = parser.add_subparsers(
        title="subcommands",
        description="specify one of these",
        required=True,
        help="additional help available for each subcommand",
    )

    # parser for error estimation subprogram
    parser_errest = subparsers.add_parser(
        "errest",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        help="estimate a measurement error model from paired family tables",
    )
    parser_errest.add_argument(
        "--measure1",
        type=str,
        required=True,
        help="family table of measured counts",
    )
    second = parser_errest.add_mutually_exclusive_group(required=True)
    second.add_argument(
        "--measure2",
        type=str,
        default=None,
        help="replicate family table with the same families in the same order",
    )
    second.add_argument(
        "--truth",
        type=str,
        default=None,
        help="family table of true counts with the same families in the same order",
    )
    parser_errest.add_argument(
        "--symmetric",
        action="store_true",
        help="error probabilities depend only on the absolute size difference",
    )
    parser_errest.add_argument(
        "--peak-zero",
        action="store_true",
        help="error probabilities must decrease away from a difference of zero",
    )
    parser_errest.add_argument(
        "--max-diff", type=int, default=2, help="largest modeled size difference"
    )
    parser_errest.add_argument(
        "--max-family-size",
        type=int,
        default=0,
        help="largest family size modeled (at least the largest count)",
    )
    parser_errest.add_argument(
        "--max-runs", type=int, default=100, help="cap on optimizer restarts"
    )
    parser_errest.add_argument(
        "--seed", type=int, default=None, help="random seed for restarts"
    )
    parser_errest.add_argument(
        "--outfile",
        type=str,
        default=None,
        help="error model output file (standard output if not given)",
    )
    parser_errest.add_argument(
        "--log",
        type=str,
        default=None,
        help="search log file (standard output if not given)",
    )
    parser_errest.set_defaults(func=errest)

    # parser for likelihood subprogram
    parser_lk = subparsers.add_parser(
        "likelihood",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        help="maximum likelihood root family size of each family",
    )
    parser_lk.add_argument(
        "--tree", type=str, required=True, help="Newick tree, or a file holding one"
    )
    parser_lk.add_argument(
        "--families", type=str, required=True, help="tab separated family table"
    )
    parser_lk.add_argument(
        "--lambda",
        dest="lambda_",
        type=float,
        default=0.01,
        help="birth rate",
    )
    parser_lk.add_argument(
        "--mu",
        type=float,
        default=-1,
        help="death rate, -1 for a single birth and death rate",
    )
    parser_lk.add_argument(
        "--errormodel", type=str, default=None, help="error model file"
    )
    parser_lk.add_argument(
        "--species",
        type=str,
        nargs="+",
        default=None,
        help="species the error model applies to (all species if not given)",
    )
    parser_lk.add_argument(
        "--pvalues",
        type=int,
        default=0,
        help="simulated families per root size for p-values, 0 for none",
    )
    parser_lk.add_argument(
        "--seed", type=int, default=None, help="random seed for simulations"
    )
    parser_lk.set_defaults(func=likelihood)

    return parser


def main(arg_list=None):
    args = get_parser().parse_args(arg_list)
    args.func(args)
