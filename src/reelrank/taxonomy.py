"""
Subgenre taxonomy.

Keys are ``<PARENT>_<NAME>`` where ``<PARENT>`` is the normalized parent genre
(``SCIFI`` for Science Fiction). Each subgenre has text cues for best-effort
matching and, where one exists, the TMDB keyword ids that identify it exactly.
"""

SUBGENRE_KEYWORDS: dict[str, list[str]] = {
    # HORROR
    'HORROR_SUPERNATURAL': ['supernatural', 'ghost', 'demon', 'possession', 'haunted', 'paranormal', 'spirit', 'poltergeist', 'séance', 'ouija', 'exorcism'],
    'HORROR_PSYCHOLOGICAL': ['psychological horror', 'mind games', 'mental breakdown', 'madness', 'insanity', 'unreliable narrator', 'hallucination', 'paranoia'],
    'HORROR_SLASHER': ['slasher', 'serial killer', 'masked killer', 'massacre', 'stalker', 'final girl', 'body count'],
    'HORROR_ZOMBIE': ['zombie', 'undead', 'living dead', 'walking dead', 'outbreak', 'infection', 'reanimated'],
    'HORROR_BODY': ['body horror', 'body transformation', 'mutation', 'grotesque', 'flesh', 'cronenberg', 'metamorphosis', 'deformity', 'parasite'],
    'HORROR_FOLK': ['folk horror', 'pagan', 'ritual', 'cult', 'rural horror', 'isolated community', 'wicker man', 'midsommar', 'ancient ritual', 'countryside terror'],
    'HORROR_WITCH': ['witch', 'witchcraft', 'coven', 'black magic', 'salem', 'witches', 'sorceress', 'dark magic', 'curse'],
    'HORROR_COSMIC': ['cosmic horror', 'lovecraft', 'lovecraftian', 'eldritch', 'cthulhu', 'unknowable', 'existential horror', 'cosmic dread', 'ancient evil', 'elder gods'],
    'HORROR_OCCULT': ['occult', 'satanic', 'devil', 'demonic ritual', 'black mass', 'satanism', 'antichrist', 'lucifer', 'infernal'],
    'HORROR_GOTHIC': ['gothic horror', 'gothic', 'dark castle', 'victorian horror', 'romantic horror', 'aristocratic horror', 'castle', 'manor'],
    'HORROR_FOUND_FOOTAGE': ['found footage', 'mockumentary horror', 'handheld', 'documentary style', 'pov horror', 'first person'],
    'HORROR_GIALLO': ['giallo', 'italian horror', 'stylized violence', 'argento', 'bava', 'murder mystery horror'],
    'HORROR_REVENGE': ['revenge horror', 'home invasion', 'survival horror', 'last house', 'torture revenge', 'vigilante horror'],
    'HORROR_MONSTER': ['monster', 'creature', 'beast', 'monster movie', 'creature feature'],
    'HORROR_VAMPIRE': ['vampire', 'nosferatu', 'bloodsucker', 'dracula', 'vampiric', 'undead', 'immortal'],
    'HORROR_WEREWOLF': ['werewolf', 'lycanthrope', 'transformation', 'wolf', 'full moon', 'lycanthropy'],
    'HORROR_RELIGIOUS': ['religious horror', 'exorcism', 'biblical', 'apocalyptic horror', 'christian horror', 'demonic', 'the omen', 'prophecy'],
    'HORROR_COMEDY': ['horror comedy', 'comedy horror', 'campy', 'splatter comedy', 'zom-com', 'funny horror'],
    'HORROR_EXTREME': ['extreme horror', 'torture porn', 'disturbing', 'graphic violence', 'transgressive', 'brutal', 'shocking'],
    'HORROR_ELEVATED': ['elevated horror', 'arthouse horror', 'prestige horror', 'slow burn horror', 'a24 horror', 'literary horror', 'art horror'],
    'HORROR_ANALOG': ['analog horror', 'vhs aesthetic', 'broadcast horror', 'local 58', 'mandela catalogue', 'retro horror'],
    'HORROR_SCIFI': ['sci-fi horror', 'space horror', 'alien horror', 'event horizon', 'science fiction horror'],
    'HORROR_ECO': ['eco-horror', 'environmental horror', 'nature horror', 'plant horror', 'animal horror', 'ecological terror'],
    'HORROR_TECH': ['techno horror', 'killer ai', 'evil technology', 'cyber horror', 'haunted technology', 'cursed video'],
    'HORROR_HOLIDAY': ['holiday horror', 'christmas horror', 'halloween horror', 'krampus', 'black christmas'],
    'HORROR_PERIOD': ['period horror', 'historical horror', 'medieval horror', 'victorian', 'colonial horror'],

    # THRILLER
    'THRILLER_PSYCHOLOGICAL': ['psychological thriller', 'mind games', 'unreliable narrator', 'twist ending', 'mental', 'paranoid thriller', 'manipulation'],
    'THRILLER_CONSPIRACY': ['conspiracy', 'cover-up', 'paranoid thriller', 'deep state', 'secret organization', 'government conspiracy'],
    'THRILLER_CRIME': ['crime thriller', 'detective', 'investigation', 'murder mystery', 'whodunit', 'police thriller', 'noir'],
    'THRILLER_NEO_NOIR': ['neo-noir', 'noir', 'femme fatale', 'hard-boiled', 'neo noir', 'crime noir', 'dark thriller', 'moody'],
    'THRILLER_LEGAL': ['legal thriller', 'courtroom thriller', 'lawyer', 'trial', 'legal drama', 'the firm'],
    'THRILLER_POLITICAL': ['political thriller', 'government', 'assassination', 'political intrigue', 'washington', 'presidency'],
    'THRILLER_EROTIC': ['erotic thriller', 'sensual', 'seduction', 'sexual thriller', 'noir romance', 'dangerous attraction'],
    'THRILLER_SPY': ['spy thriller', 'espionage thriller', 'intelligence', 'cia', 'mi6', 'cold war thriller', 'spy game'],
    'THRILLER_MEDICAL': ['medical thriller', 'virus', 'outbreak', 'epidemic', 'pandemic', 'hospital thriller', 'disease'],
    'THRILLER_TECH': ['techno thriller', 'hacker', 'cyber thriller', 'technology', 'digital', 'surveillance'],
    'THRILLER_DISASTER': ['disaster thriller', 'survival thriller', 'catastrophe', 'natural disaster', 'emergency'],
    'THRILLER_FINANCIAL': ['financial thriller', 'wall street', 'corporate thriller', 'fraud', 'banking', 'white collar crime'],
    'THRILLER_RELIGIOUS': ['religious thriller', 'da vinci code', 'church conspiracy', 'Vatican', 'religious mystery'],
    'THRILLER_REVENGE': ['revenge thriller', 'vigilante', 'payback', 'retribution', 'vengeance thriller'],
    'THRILLER_ACTION': ['action thriller', 'high octane', 'chase', 'explosive'],

    # DRAMA
    'DRAMA_PSYCHOLOGICAL': ['psychological drama', 'character study', 'internal conflict', 'mental health', 'emotional'],
    'DRAMA_SURREAL': ['surreal', 'surrealism', 'dreamlike', 'abstract', 'david lynch', 'lynchian', 'avant-garde', 'experimental', 'bizarre', 'strange'],
    'DRAMA_ARTHOUSE': ['arthouse', 'art house', 'experimental', 'avant-garde', 'art film', 'independent', 'auteur', 'festival film'],
    'DRAMA_SLOW_BURN': ['slow burn', 'atmospheric', 'meditative', 'contemplative', 'deliberate pace', 'character driven'],
    'DRAMA_HISTORICAL': ['historical', 'period piece', 'based on true story', 'biography', 'biopic', 'historical drama'],
    'DRAMA_FAMILY': ['family drama', 'generational', 'dysfunctional family', 'family conflict', 'domestic drama', 'siblings'],
    'DRAMA_COMING_OF_AGE': ['coming of age', 'teenager', 'adolescence', 'growing up', 'youth', 'high school', 'teen drama'],
    'DRAMA_ROMANTIC': ['romantic drama', 'love story', 'romance', 'relationship', 'heartbreak', 'tragic love'],
    'DRAMA_SOCIAL': ['social drama', 'social commentary', 'inequality', 'class struggle', 'poverty', 'social issues', 'realist'],
    'DRAMA_COURTROOM': ['courtroom drama', 'trial', 'justice', 'legal drama', 'verdict', 'jury'],
    'DRAMA_MEDICAL': ['medical drama', 'illness', 'doctor', 'hospital', 'disease', 'dying', 'terminal'],
    'DRAMA_SPORTS': ['sports drama', 'underdog', 'championship', 'athlete', 'coach', 'team', 'competition'],
    'DRAMA_WAR': ['war drama', 'anti-war', 'soldier', 'battlefield', 'military drama', 'veteran', 'ptsd'],
    'DRAMA_POLITICAL': ['political drama', 'election', 'government', 'presidency', 'politics', 'power'],
    'DRAMA_BIOGRAPHICAL': ['biography', 'biopic', 'true story', 'real life', 'based on', 'life story'],
    'DRAMA_TRAGEDY': ['tragedy', 'tragic', 'downfall', 'greek tragedy', 'shakespearean', 'fate', 'doom'],
    'DRAMA_MELODRAMA': ['melodrama', 'emotional', 'sentimental', 'weepy', 'tearjerker', 'romantic melodrama'],
    'DRAMA_MUSICAL': ['musical drama', 'music', 'musician', 'singer', 'band', 'concert', 'performance'],
    'DRAMA_EXISTENTIAL': ['existential', 'philosophical', 'meaning of life', 'nihilism', 'absurdist', 'identity crisis'],
    'DRAMA_RELIGIOUS': ['religious drama', 'faith', 'spiritual', 'church', 'priest', 'crisis of faith'],
    'DRAMA_PRISON': ['prison drama', 'incarceration', 'escape', 'penitentiary', 'death row', 'convict'],

    # SCI-FI
    'SCIFI_SPACE': ['space', 'spaceship', 'outer space', 'galaxy', 'planet', 'astronaut', 'space station', 'interstellar', 'star wars', 'star trek'],
    'SCIFI_CYBERPUNK': ['cyberpunk', 'cyber', 'neon', 'hacker', 'corporate dystopia', 'blade runner', 'high tech low life', 'neural'],
    'SCIFI_TIME_TRAVEL': ['time travel', 'time loop', 'time machine', 'parallel universe', 'alternate timeline', 'temporal', 'paradox'],
    'SCIFI_ALIEN': ['alien', 'extraterrestrial', 'ufo', 'alien invasion', 'first contact', 'close encounters'],
    'SCIFI_POST_APOCALYPTIC': ['post-apocalyptic', 'apocalypse', 'end of world', 'survival', 'wasteland', 'nuclear', 'fallout'],
    'SCIFI_DYSTOPIA': ['dystopia', 'dystopian', 'authoritarian', 'totalitarian', 'orwellian', 'surveillance state', 'oppressive society'],
    'SCIFI_UTOPIA': ['utopia', 'utopian', 'future society', 'idealistic', 'perfect world'],
    'SCIFI_HARD': ['hard science fiction', 'hard sci-fi', 'realistic', 'physics', 'engineering', 'scientific accuracy'],
    'SCIFI_SOFT': ['soft sci-fi', 'social science fiction', 'philosophical sci-fi', 'sociological'],
    'SCIFI_SPACE_OPERA': ['space opera', 'epic', 'galactic', 'empire', 'rebellion', 'star wars', 'dune', 'epic space'],
    'SCIFI_BIOPUNK': ['biopunk', 'genetic engineering', 'biotech', 'biotechnology', 'cloning', 'gattaca', 'dna'],
    'SCIFI_STEAMPUNK': ['steampunk', 'victorian', 'clockwork', 'steam-powered', 'retro-futurism', 'airship'],
    'SCIFI_DIESELPUNK': ['dieselpunk', 'retro-futurism', '1940s', 'art deco', 'diesel', 'pulp', 'noir sci-fi'],
    'SCIFI_ROBOT': ['robot', 'android', 'ai', 'artificial intelligence', 'sentient machine', 'cyborg', 'automation'],
    'SCIFI_VIRTUAL_REALITY': ['virtual reality', 'simulation', 'metaverse', 'matrix', 'vr', 'simulated world', 'digital reality'],
    'SCIFI_KAIJU': ['kaiju', 'giant monster', 'godzilla', 'pacific rim', 'titan', 'colossal creature'],
    'SCIFI_MILITARY': ['military sci-fi', 'space marines', 'starship troopers', 'space war', 'galactic military'],
    'SCIFI_INVASION': ['alien invasion', 'war of the worlds', 'independence day', 'extraterrestrial threat', 'invasion'],
    'SCIFI_TECH_NOIR': ['tech noir', 'future noir', 'neo-noir sci-fi', 'blade runner', 'dark city', 'moody sci-fi'],
    'SCIFI_CLONE': ['clone', 'identity', 'duplicate', 'replicant', 'copy', 'multiplicity'],
    'SCIFI_SOLARPUNK': ['solarpunk', 'eco-futurism', 'sustainable future', 'green technology', 'optimistic sci-fi'],

    # COMEDY
    'COMEDY_ROMANTIC': ['romantic comedy', 'rom-com', 'romance', 'love story', 'dating', 'meet cute'],
    'COMEDY_DARK': ['dark comedy', 'black comedy', 'morbid humor', 'gallows humor', 'twisted comedy', 'macabre'],
    'COMEDY_SATIRE': ['satire', 'political satire', 'social satire', 'satirical', 'lampoon', 'parody of society'],
    'COMEDY_PARODY': ['parody', 'spoof', 'mockumentary', 'genre parody', 'send-up', 'pastiche'],
    'COMEDY_SLAPSTICK': ['slapstick', 'physical comedy', 'farce', 'pratfall', 'visual gags', 'broad comedy'],
    'COMEDY_BUDDY': ['buddy comedy', 'buddy cop', 'duo', 'odd couple', 'friendship', 'partners'],
    'COMEDY_SCREWBALL': ['screwball comedy', 'witty', 'fast-paced dialogue', 'battle of sexes', 'madcap'],
    'COMEDY_STONER': ['stoner comedy', 'marijuana', 'weed', 'pot', 'high', 'drug comedy'],
    'COMEDY_ABSURD': ['absurd', 'surreal comedy', 'random', 'monty python', 'absurdist', 'non sequitur'],
    'COMEDY_CRINGE': ['cringe comedy', 'awkward', 'embarrassing', 'uncomfortable humor', 'office style'],
    'COMEDY_DRAMEDY': ['dramedy', 'tragicomedy', 'bittersweet', 'comedy drama', 'serious comedy'],
    'COMEDY_ACTION': ['action comedy', 'comedy action', 'adventure comedy', 'funny action'],
    'COMEDY_TEEN': ['teen comedy', 'high school comedy', 'coming of age comedy', 'youth comedy'],
    'COMEDY_RAUNCHY': ['raunchy', 'crude', 'adult comedy', 'sex comedy', 'r-rated comedy', 'gross-out'],
    'COMEDY_IMPROV': ['improvised', 'improv comedy', 'mockumentary', 'ad-libbed'],

    # ACTION
    'ACTION_SUPERHERO': ['superhero', 'super hero', 'marvel', 'dc comics', 'comic book', 'batman', 'superman', 'spider-man', 'avengers', 'x-men', 'justice league', 'mcu', 'dceu'],
    'ACTION_SPY': ['spy', 'espionage', 'secret agent', 'james bond', '007', 'cia', 'mi6', 'intelligence', 'undercover'],
    'ACTION_MILITARY': ['military', 'war action', 'soldier', 'navy seal', 'special forces', 'combat', 'battlefield', 'army'],
    'ACTION_MARTIAL_ARTS': ['martial arts', 'kung fu', 'karate', 'taekwondo', 'mixed martial arts', 'mma', 'fighting', 'wuxia'],
    'ACTION_HEIST': ['heist', 'robbery', 'bank robbery', 'con artist', 'theft', 'stealing', 'caper', "ocean's"],
    'ACTION_CAR_CHASE': ['car chase', 'racing', 'fast cars', 'street racing', 'vehicles', 'fast and furious', 'motorcar'],
    'ACTION_DISASTER': ['disaster', 'earthquake', 'tsunami', 'volcano', 'natural disaster', 'catastrophe'],
    'ACTION_BUDDY_COP': ['buddy cop', 'police partners', 'lethal weapon', 'cop duo', 'mismatched partners'],
    'ACTION_REVENGE': ['revenge', 'vengeance', 'payback', 'john wick', 'vigilante', 'retribution'],
    'ACTION_MERCENARY': ['mercenary', 'soldier of fortune', 'guns for hire', 'expendables', 'rambo'],
    'ACTION_SWASHBUCKLER': ['swashbuckler', 'pirate', 'sword fighting', 'musketeer', 'adventure', 'pirates'],
    'ACTION_WESTERN': ['western', 'cowboy', 'frontier', 'wild west', 'gunslinger', 'outlaw'],
    'ACTION_GUNPLAY': ['gunplay', 'shootout', 'gun fu', 'john woo', 'heroic bloodshed', 'balletic action'],
    'ACTION_PARKOUR': ['parkour', 'free running', 'chase', 'athletic', 'stunts'],

    # ANIMATION
    'ANIME_SCIFI': ['anime', 'japanese animation', 'anime sci-fi'],
    'ANIME_MECHA': ['mecha', 'giant robot', 'gundam', 'evangelion', 'robot anime'],
    'ANIME_SHONEN': ['shonen', 'battle anime', 'action anime', 'dragon ball', 'naruto'],
    'ANIME_SEINEN': ['seinen', 'mature anime', 'adult anime'],
    'ANIME_SLICE_OF_LIFE': ['slice of life', 'everyday life', 'iyashikei', 'relaxing anime'],
    'ANIME_ISEKAI': ['isekai', 'transported to another world', 'fantasy world'],
    'ANIMATION_PIXAR': ['pixar', 'disney animation', 'family animation', 'cg animation'],
    'ANIMATION_STOP_MOTION': ['stop motion', 'claymation', 'puppet animation', 'laika'],
    'ANIMATION_ADULT': ['adult animation', 'mature animation', 'not for kids'],

    # DOCUMENTARY
    'DOC_TRUE_CRIME': ['true crime', 'murder documentary', 'serial killer doc', 'crime documentary', 'investigation'],
    'DOC_NATURE': ['nature documentary', 'wildlife', 'planet earth', 'animal', 'nature'],
    'DOC_MUSIC': ['music documentary', 'concert film', 'band documentary', 'musician'],
    'DOC_SPORTS': ['sports documentary', 'athlete', 'team', 'championship', 'athletic'],
    'DOC_POLITICAL': ['political documentary', 'social documentary', 'activist', 'exposé'],
    'DOC_FOOD': ['food documentary', 'chef', 'cooking', 'cuisine', 'restaurant'],
    'DOC_TRAVEL': ['travel documentary', 'journey', 'expedition', 'exploration'],
    'DOC_HISTORICAL': ['historical documentary', 'history', 'war documentary', 'historical event'],

    # ROMANCE
    'ROMANCE_PERIOD': ['period romance', 'historical romance', 'regency', 'jane austen', 'costume drama'],
    'ROMANCE_TRAGIC': ['tragic romance', 'doomed love', 'star-crossed lovers', 'sad romance'],
    'ROMANCE_LGBTQ': ['lgbtq romance', 'gay romance', 'lesbian romance', 'queer love', 'same-sex romance'],
    'ROMANCE_INTERRACIAL': ['interracial romance', 'multicultural love', 'cross-cultural'],
    'ROMANCE_FANTASY': ['fantasy romance', 'supernatural romance', 'paranormal romance'],

    # FANTASY
    'FANTASY_EPIC': ['epic fantasy', 'high fantasy', 'lord of the rings', 'tolkien', 'quest', 'chosen one'],
    'FANTASY_DARK': ['dark fantasy', 'grimdark', 'dark magic', 'grim fantasy', 'mature fantasy'],
    'FANTASY_URBAN': ['urban fantasy', 'contemporary fantasy', 'magic in modern world', 'hidden magical world'],
    'FANTASY_FAIRY_TALE': ['fairy tale', 'fairytale', 'storybook', 'once upon a time', 'enchanted'],
    'FANTASY_SWORD_SORCERY': ['sword and sorcery', 'conan', 'barbarian', 'adventure fantasy'],
    'FANTASY_MYTHOLOGICAL': ['mythological', 'greek mythology', 'norse mythology', 'legends', 'gods'],
}


SUBGENRE_KEYWORD_IDS: dict[str, list[int]] = {
    # HORROR
    'HORROR_SUPERNATURAL': [6152],
    'HORROR_PSYCHOLOGICAL': [295907],
    'HORROR_SLASHER': [12339],
    'HORROR_ZOMBIE': [12377],
    'HORROR_BODY': [283085],
    'HORROR_FOLK': [209568],
    'HORROR_WITCH': [616],
    'HORROR_COSMIC': [215959],
    'HORROR_OCCULT': [156174],
    'HORROR_GOTHIC': [15032],
    'HORROR_FOUND_FOOTAGE': [163053],
    'HORROR_MONSTER': [1299],
    'HORROR_VAMPIRE': [3133],
    'HORROR_WEREWOLF': [12564],
    'HORROR_RELIGIOUS': [239680],
    'HORROR_COMEDY': [362402],
    'HORROR_ECO': [237516],
    'HORROR_TECH': [306144],
    'HORROR_HOLIDAY': [323756],
    'HORROR_PERIOD': [343511],
    'HORROR_EXTREME': [345799],
    'HORROR_ELEVATED': [353788],
    'HORROR_REVENGE': [288882],
    'HORROR_GIALLO': [361094],
    'HORROR_SCIFI': [323910],
    'HORROR_ANALOG': [319324],

    # THRILLER
    'THRILLER_PSYCHOLOGICAL': [12565],
    'THRILLER_CONSPIRACY': [10410],
    'THRILLER_CRIME': [355372],
    'THRILLER_NEO_NOIR': [207268],
    'THRILLER_LEGAL': [254459],
    'THRILLER_POLITICAL': [209817],
    'THRILLER_EROTIC': [207767],
    'THRILLER_SPY': [217282],
    'THRILLER_MEDICAL': [289673],
    'THRILLER_TECH': [298605],
    'THRILLER_REVENGE': [252204],
    'THRILLER_ACTION': [302132],

    # DRAMA
    'DRAMA_PSYCHOLOGICAL': [309029],
    'DRAMA_SURREAL': [3307],
    'DRAMA_ARTHOUSE': [318182],
    'DRAMA_SLOW_BURN': [277551],
    'DRAMA_HISTORICAL': [15126],
    'DRAMA_FAMILY': [12279],
    'DRAMA_COMING_OF_AGE': [10683],
    'DRAMA_ROMANTIC': [304976],
    'DRAMA_SOCIAL': [306007],
    'DRAMA_COURTROOM': [214780],
    'DRAMA_MEDICAL': [208788],
    'DRAMA_SPORTS': [294708],
    'DRAMA_WAR': [324284],
    'DRAMA_POLITICAL': [298528],
    'DRAMA_BIOGRAPHICAL': [5565],
    'DRAMA_TRAGEDY': [10614],
    'DRAMA_MELODRAMA': [293016],
    'DRAMA_MUSICAL': [339962],
    'DRAMA_EXISTENTIAL': [295182],
    'DRAMA_RELIGIOUS': [298552],
    'DRAMA_PRISON': [355148],

    # SCI-FI
    'SCIFI_SPACE': [9882],
    'SCIFI_CYBERPUNK': [12190],
    'SCIFI_TIME_TRAVEL': [4379],
    'SCIFI_ALIEN': [9951],
    'SCIFI_POST_APOCALYPTIC': [359337],
    'SCIFI_DYSTOPIA': [4565],
    'SCIFI_UTOPIA': [3469],
    'SCIFI_SPACE_OPERA': [161176],
    'SCIFI_BIOPUNK': [240875],
    'SCIFI_STEAMPUNK': [10028],
    'SCIFI_ROBOT': [14544],
    'SCIFI_VIRTUAL_REALITY': [4563],
    'SCIFI_KAIJU': [161791],
    'SCIFI_MILITARY': [298591],
    'SCIFI_INVASION': [14909],
    'SCIFI_TECH_NOIR': [178657],
    'SCIFI_CLONE': [402],

    # COMEDY
    'COMEDY_ROMANTIC': [363715],
    'COMEDY_DARK': [10123],
    'COMEDY_SATIRE': [8201],
    'COMEDY_PARODY': [9755],
    'COMEDY_SLAPSTICK': [9253],
    'COMEDY_BUDDY': [167541],
    'COMEDY_SCREWBALL': [155457],
    'COMEDY_STONER': [302399],
    'COMEDY_ABSURD': [309974],
    'COMEDY_CRINGE': [363145],
    'COMEDY_DRAMEDY': [203322],
    'COMEDY_ACTION': [247799],
    'COMEDY_TEEN': [155722],
    'COMEDY_IMPROV': [215711],

    # ACTION
    'ACTION_SUPERHERO': [9715],
    'ACTION_SPY': [470],
    'ACTION_MILITARY': [162365],
    'ACTION_MARTIAL_ARTS': [779],
    'ACTION_HEIST': [10051],
    'ACTION_CAR_CHASE': [357378],
    'ACTION_DISASTER': [10617],
    'ACTION_BUDDY_COP': [167316],
    'ACTION_REVENGE': [9748],
    'ACTION_MERCENARY': [3070],
    'ACTION_SWASHBUCKLER': [157186],
    'ACTION_WESTERN': [305941],
    'ACTION_GUNPLAY': [209242],
    'ACTION_PARKOUR': [6955],

    # ANIMATION
    'ANIME_SCIFI': [210024],
    'ANIME_MECHA': [10046],
    'ANIME_SHONEN': [363152],
    'ANIME_SEINEN': [195668],
    'ANIME_SLICE_OF_LIFE': [9914],
    'ANIME_ISEKAI': [237451],
    'ANIMATION_PIXAR': [338822],
    'ANIMATION_STOP_MOTION': [10121],
    'ANIMATION_ADULT': [161919],

    # DOCUMENTARY
    'DOC_TRUE_CRIME': [33722],
    'DOC_NATURE': [221355],
    'DOC_MUSIC': [246377],
    'DOC_SPORTS': [159290],
    'DOC_POLITICAL': [239902],
    'DOC_FOOD': [307690],
    'DOC_TRAVEL': [310315],
    'DOC_HISTORICAL': [321490],

    # ROMANCE
    'ROMANCE_PERIOD': [361772],
    'ROMANCE_TRAGIC': [186956],
    'ROMANCE_INTERRACIAL': [10194],

    # FANTASY
    'FANTASY_EPIC': [335572],
    'FANTASY_DARK': [177895],
    'FANTASY_URBAN': [298549],
    'FANTASY_FAIRY_TALE': [3205],
    'FANTASY_SWORD_SORCERY': [234213],
    'FANTASY_MYTHOLOGICAL': [207003],
}

KEYWORD_ID_TO_SUBGENRE: dict[int, str] = {
    keyword_id: subgenre
    for subgenre, keyword_ids in SUBGENRE_KEYWORD_IDS.items()
    for keyword_id in keyword_ids
}
