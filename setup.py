import setuptools

setuptools.setup(
    name='adahmc',
    version='0.1.0',
    author='adahmc developers',
    description=(
        'Adaptive Hamiltonian Monte Carlo and No-U-Turn samplers'
    ),
    long_description=(
        'adahmc is a Python package implementing gradient-based Markov chain '
        'Monte Carlo methods, static and dual-averaging Hamiltonian Monte '
        'Carlo and the No-U-Turn sampler, with windowed adaptation of the '
        'integrator step size and mass matrix and support for constrained '
        'parameters through bijective transforms.'
    ),
    packages=['adahmc'],
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Topic :: Scientific/Engineering',
        'Intended Audience :: Science/Research',
        'Intended Audience :: Developers'
    ],
    keywords='inference sampling MCMC HMC NUTS',
    license='MIT',
    install_requires=['numpy>=1.17', 'scipy>=1.1'],
    python_requires='>=3.6',
    extras_require={
        'autodiff': ['autograd>=1.3'],
        'test': ['pytest>=5.0', 'autograd>=1.3'],
    }
)
